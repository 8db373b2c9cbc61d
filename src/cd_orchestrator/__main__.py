from cd_orchestrator.cli import main

main()
