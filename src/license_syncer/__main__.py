from license_syncer.cli import main

main()
