"""
Stock Kernel - multi-warehouse stock allocation and transfers

Tracks how many units of each product every warehouse holds, with:
- All-or-nothing order reservation from a single warehouse per line
- Conservation-preserving warehouse-to-warehouse transfers
- No oversell under concurrent requests (conditional updates)
- Full auditability via hash chain
"""

__version__ = "0.1.0"
