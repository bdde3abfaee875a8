from deepdex.cli import app

app(prog_name="deepdex")
