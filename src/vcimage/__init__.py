"""vcimage - vCloud Director vApp templates as machine images

Philosophy:
- Catalogs and vApp templates map onto a plain machine-image model
- Expensive listings are cached and never run twice at once
- Capture always puts the source vApp back the way it found it

The vcimage package lists, captures, publishes and removes vApp templates,
with a click CLI on top.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
