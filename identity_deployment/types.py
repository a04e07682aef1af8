import click
from eth_utils import is_address, to_checksum_address

from identity_deployment.config import parse_constant
from identity_deployment.constants import ZERO_ADDRESS
from identity_deployment.errors import ConfigurationError


class Seconds(click.ParamType):
    """A strictly positive number of seconds."""

    name = "seconds"

    def convert(self, value, param, ctx):
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            self.fail(f"{value} is not a number of seconds", param, ctx)
        if seconds <= 0:
            self.fail(f"{value} must be greater than zero", param, ctx)
        return seconds


class AdminAddress(click.ParamType):
    """Checksummed address that may own an upgradeable proxy (never the zero address)."""

    name = "admin_address"

    def convert(self, value, param, ctx):
        if not is_address(value):
            self.fail(f"Invalid ethereum address: {value}", param, ctx)
        address = to_checksum_address(value)
        if address == to_checksum_address(ZERO_ADDRESS):
            self.fail("The proxy admin cannot be the zero address", param, ctx)
        return address


class ConstantAssignment(click.ParamType):
    """NAME=VALUE pair overriding a plan constant."""

    name = "NAME=VALUE"

    def convert(self, value, param, ctx):
        try:
            return parse_constant(value)
        except ConfigurationError as e:
            self.fail(str(e), param, ctx)
