from .accountant import SpaceAccountant
from .catalog import BackupUnitCatalog

__all__ = ['SpaceAccountant', 'BackupUnitCatalog']
