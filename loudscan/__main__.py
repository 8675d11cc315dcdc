from loudscan.cli import main

main()
