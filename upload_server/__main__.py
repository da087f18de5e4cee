from upload_server.main import cli

cli()
