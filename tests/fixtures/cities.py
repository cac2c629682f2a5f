""" Completion declarations for a travel prompt and a city resource template. """
from interface_mcp.markers import Completion, Prompt, Server

CITIES = ["New York", "New Orleans", "Newark", "London", "Los Angeles"]


class Travel(Server):
    name = "travel"


class PlanTrip(Prompt):
    name = "plan_trip"
    template = "Plan a weekend in {city}"


class CityCompletion(Completion):
    """Autocomplete city names."""
    name = "city_completion"
    ref = {"type": "argument", "name": "city"}


class WeatherUriCompletion(Completion):
    name = "weather_uri"
    ref = {"type": "resource", "name": "weather://{city}"}


class NumberedCompletion(Completion):
    name = "numbered"


def cityCompletion(value):
    return [c for c in CITIES if c.lower().startswith(value.lower())]


async def weatherUri(partial, context):
    return [f"weather://{c}" for c in cityCompletion(partial)]


def numbered(**kwargs):
    return range(150)
