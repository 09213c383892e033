"""Package entry point for ``python -m ekacare_scribe``.

WHY: Users run the client as ``python -m ekacare_scribe a.mp3 b.mp3``.
Python's ``-m`` flag looks for ``__main__.py`` inside the package and
executes it.

HOW: Delegates to the CLI's main() function.
"""

from ekacare_scribe.cli import main

if __name__ == "__main__":
    main()
