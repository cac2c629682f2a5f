""" Tools with no usable implementation; loading this module must fail. """
from interface_mcp.markers import Prompt, Tool


class AddNumbers(Tool):
    name = "add_numbers"


class Multiply(Tool):
    name = "multiply_numbers"


class Welcome(Prompt):
    name = "welcome"


def add_numbers(a, b):
    return a + b
