"""Allow ``python -m knowledge_assistant.cli`` execution."""

from knowledge_assistant.cli.assistant import main

main()
