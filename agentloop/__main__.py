from agentloop.cli.app import main

main()
