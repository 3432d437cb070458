from ballotproof.cli import cli

cli()
