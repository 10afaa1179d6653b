"""Run the relay server with `python -m envirovoice`."""

from envirovoice.server import main

main()
