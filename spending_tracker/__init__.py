"""Top-level package for the spending tracker.

The primary modules are:

* ``db`` – the SQLite transaction store and import-session records
* ``importer`` – CSV validation and duplicate-safe import
* ``analytics`` – KPIs and category summaries over a transaction set
* ``heatmap`` – daily spending and calendar intensity scaling
* ``budget`` – budget-vs-actual metrics and burn-rate progress
* ``queries`` – request-level entry points used by the CLI

From the command line:

```bash
spending-tracker import statement.csv
spending-tracker budget 2025-01 --config data/budget-config.json
```
"""

from .budget import BudgetConfig, budget_report
from .db import TransactionStore
from .importer import ImportOptions, ImportPipeline

__version__ = "0.1.0"

__all__ = [
    "BudgetConfig",
    "ImportOptions",
    "ImportPipeline",
    "TransactionStore",
    "budget_report",
]
