from annostore.cli import main

main()
