from cometmonkey.cli import main

main()
