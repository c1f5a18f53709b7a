# Copyright (c) Syntropy Systems
"""Remote agent executing scenarios on behalf of a distributed coordinator."""
