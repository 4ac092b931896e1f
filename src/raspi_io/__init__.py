"""
raspi-io - Raspberry Pi hardware peripheral client.

This package connects to the raspi-io agent running on a Raspberry Pi over
TCP and controls the board's GPIO pins, LEDs, I2C buses and SPI channels.
"""

__version__ = "0.1.0"

from raspi_io.client import ConnectionState, RaspiClient  # noqa: E402
from raspi_io.errors import RaspiError  # noqa: E402

__all__ = ["ConnectionState", "RaspiClient", "RaspiError", "__version__"]
