"""Command-line tools for the knowledge base.

``python -m knowledge_rag.cli <command>`` runs :mod:`knowledge_rag.cli.knowledge`,
which indexes files, web pages and text into a collection, lists and
inspects documents, and runs semantic search.  Commands use argparse and
share the API's dependency wiring.
"""
