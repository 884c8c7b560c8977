from .base import ShortRateLattice
from .equity_tree import CorrelatedStockTree, StockDividends, StockLattice
from .intersecting_trees import IntersectingTreesModel, LatticeState
from .short_rate import BlackKarasinskiLattice, HullWhiteLattice, ShortRateModel, make_rate_lattice
from .soft_call import SoftCallTable
