# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Static resources bundled into the wheel.

Subpackages:

- ``devenv._bundled.container`` -- default development image build context
"""
