from vis_sync.cli.main import cli

cli()
