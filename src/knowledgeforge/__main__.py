"""Allow ``python -m knowledgeforge``."""

from knowledgeforge.cli import main

main()
