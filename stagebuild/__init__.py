"""stagebuild - resumable build orchestration for third-party component stacks.

This package drives an ordered list of source components through fetch,
patch, configure/compile/install-to-stage and packaging, recording
completion so that reruns only redo what has not finished yet.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
