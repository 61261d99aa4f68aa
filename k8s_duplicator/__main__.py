from .main import cli

cli(prog_name="k8s-duplicator")
