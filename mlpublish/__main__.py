from mlpublish.cli import main

main()
