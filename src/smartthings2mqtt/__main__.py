from smartthings2mqtt._cli import main

main()
