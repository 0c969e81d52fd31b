"""nxcloud - command-line client for Nextcloud file hosting.

Log in once with an app password, then list, create, delete, push and pull
files on the server, either one command at a time or from an interactive
shell that remembers the current remote directory.
"""

__version__ = "1.0.0"
