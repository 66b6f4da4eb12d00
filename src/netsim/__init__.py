"""
netsim

Topology control plane for container backed network simulations.

model    networks, devices and the topology file loader
control  backend controller contract and error taxonomy
backends docker and in memory controllers
runtime  configuration, registries and deployment orchestration
hub      the facade a test harness holds
cli      command line entry point
"""

__version__ = "0.1.0"
