"""Knowledge-base GraphRAG retrieval engine.

Hybrid knowledge graph + vector/lexical search over synchronized
Confluence pages and Jira issues.
"""

__version__ = "0.1.0"
