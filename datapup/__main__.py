from datapup.cli import main

main()
