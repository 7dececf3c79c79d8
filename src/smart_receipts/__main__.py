from smart_receipts.cli import main

main()
