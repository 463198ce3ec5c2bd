from .driver import create_neo4j_driver

__all__ = ["create_neo4j_driver"]
