"""
This module provides the semi-supervised rescoring of peptide-spectrum matches:
input preparation, cross-validation folds, classifiers, the iterative learning
loop and the deployed fold ensemble.

Submodules:
-----------
- `data_handling`: Preparation and validation of the PSM feature table, ranking
  within spectrum groups and stratified fold assignment.
- `classifiers`: Implements the learners (LDA, SVM, XGBoost, HistGradientBoosting).
- `convergence`: Tracks accepted PSMs across rounds and decides when to stop.
- `semi_supervised`: Implements the iterative semi-supervised learning loop.
- `ensemble`: Combines and persists the fold models of the final round.
- `runner`: Defines the rescoring workflow and its output.

Dependencies:
-------------
- `numpy`
- `pandas`
- `scikit-learn`
- `xgboost`
- `loguru`
- `tabulate`
"""
