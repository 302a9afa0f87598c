from drishti_core.cli import main

main()
