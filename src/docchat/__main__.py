from docchat.cli import app

app()
