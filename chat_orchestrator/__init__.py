"""
Chat orchestrator for the fitness app's in-app assistant.

Layout:
- catalog/   static exercise catalog + fuzzy matcher
- libs/      document store, HTTP functions client, usage tracking
- skills/    domain operations behind the tools
- shell/     sessions, context, dispatcher, streaming, bridge, agent
- runtime    builds every component once per process
- server     Flask HTTP/SSE surface
- cli        click + rich entry point
"""

__version__ = "0.1.0"
