from repotree.cli import app

app()
