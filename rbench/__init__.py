"""Remote benchmarking of Go packages on short-lived AWS EC2 instances.

The package cross-compiles a Go test binary, provisions a single EC2
instance, uploads and runs the binary over SSH while streaming its output,
then terminates the instance.
"""

from __future__ import annotations

__version__ = "0.1.0"
