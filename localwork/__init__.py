"""LocalWork orchestration core.

Client-side core of a local desktop AI assistant: model downloads and loading,
a tool-augmented chat session against a backend inference engine, and
folder-scoped file access granted by the user.
"""

__version__ = "0.1.0"
