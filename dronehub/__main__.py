from dronehub.cli import main

main()
