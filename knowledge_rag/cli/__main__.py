"""Allow ``python -m knowledge_rag.cli`` execution."""

from knowledge_rag.cli.knowledge import main

main()
