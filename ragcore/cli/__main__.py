"""Allow ``python -m ragcore.cli`` execution."""

from ragcore.cli.main import main

main()
