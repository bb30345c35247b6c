"""deploypipe: sequential deployment orchestrator for GraphQL subgraphs."""

__version__ = "0.1.0"
