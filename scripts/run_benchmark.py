"""
Benchmark Script
Cross-validates the reference model configurations on a ratings file
(MovieLens 100k `u.data` by default) and prints mean / std per metric.
"""
import argparse
import sys
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from cf_engine import config
from cf_engine.data_io import load_dataset_from_csv
from cf_engine.evaluate import MAE, MAP, MRR, NDCG, RMSE, Precision, Recall
from cf_engine.pipeline import create_model
from cf_engine.train import KFoldSplitter, cross_validate, summarize

# name -> (registry name, params, evaluators)
SCENARIOS = {
    'baseline': ('baseline', {}, [RMSE, MAE]),
    'svd': ('svd', {}, [RMSE, MAE]),
    'svd_librec': ('svd', {'lr': 0.007, 'n_epochs': 100, 'n_factors': 80, 'reg': 0.1}, [RMSE, MAE]),
    'svdpp_librec': ('svdpp', {'lr': 0.01, 'n_epochs': 100, 'n_factors': 20, 'reg': 0.1,
                               'init_mean': 0.0, 'init_std': 0.001}, [RMSE, MAE]),
    'nmf': ('nmf', {}, [RMSE, MAE]),
    'nmf_librec': ('nmf', {'n_factors': 10, 'n_epochs': 100, 'init_low': 0.0, 'init_high': 0.01},
                   [RMSE, MAE]),
    'slope_one': ('slope_one', {}, [RMSE, MAE]),
    'coclustering': ('coclustering', {}, [RMSE, MAE]),
    'knn': ('knn', {'mode': 'basic'}, [RMSE, MAE]),
    'knn_centered': ('knn', {'mode': 'centered'}, [RMSE, MAE]),
    'knn_zscore': ('knn', {'mode': 'zscore'}, [RMSE, MAE]),
    'knn_baseline': ('knn', {'mode': 'baseline'}, [RMSE, MAE]),
    'knn_pearson': ('knn', {'mode': 'centered', 'similarity': 'pearson', 'user_based': True,
                            'shrinkage': 25, 'k': 60}, [RMSE, MAE]),
    'knn_item_pearson': ('knn', {'mode': 'centered', 'similarity': 'pearson', 'user_based': False,
                                 'shrinkage': 2500, 'k': 40}, [RMSE, MAE]),
    'item_pop': ('item_pop', {}, [Precision(5), Precision(10), Recall(5), Recall(10), MAP(), NDCG(), MRR()]),
    'svd_bpr': ('svd', {'optimizer': 'bpr', 'n_factors': 10, 'reg': 0.01, 'lr': 0.05, 'n_epochs': 100,
                        'init_mean': 0.0, 'init_std': 0.001},
                [Precision(5), Precision(10), Recall(5), Recall(10), MAP(), NDCG()]),
    'wrmf': ('wrmf', {'n_factors': 20, 'reg': 0.015, 'alpha': 1.0, 'n_epochs': 10},
             [Precision(5), Precision(10), Recall(5), Recall(10), MAP(), NDCG()]),
}


def main():
    """
    Run the selected benchmark scenarios
    """
    parser = argparse.ArgumentParser(description='Cross-validate reference model configurations')
    parser.add_argument('path', type=str, help='Ratings file (user, item, rating[, ...])')
    parser.add_argument('--sep', type=str, default='\t', help='Field delimiter (default: tab)')
    parser.add_argument('--header', action='store_true', help='First row is a header')
    parser.add_argument('--folds', type=int, default=config.CROSS_VALIDATION_CONFIG['n_folds'])
    parser.add_argument('--seed', type=int, default=config.RANDOM_SEED)
    parser.add_argument('--n-jobs', type=int, default=None)
    parser.add_argument('--scenario', action='append', choices=sorted(SCENARIOS),
                        help='Scenario to run (repeatable, default: all)')
    args = parser.parse_args()

    config.setup_logging()
    dataset = load_dataset_from_csv(args.path, sep=args.sep, header=args.header)
    splitter = KFoldSplitter(args.folds, random_state=args.seed)

    print("=" * 80)
    print(f"BENCHMARK - {dataset!r}, {args.folds}-fold cross-validation")
    print("=" * 80)

    for name in args.scenario or list(SCENARIOS):
        model_name, params, evaluators = SCENARIOS[name]
        model = create_model(model_name, params)
        results = cross_validate(model, dataset, evaluators, splitter, n_jobs=args.n_jobs)

        print(f"\n{name}: {model!r}")
        for metric, stats in summarize(results).items():
            print(f"  {metric:<14} {stats['mean']:.4f} ± {stats['std']:.4f}")

    print("\n" + "=" * 80)


if __name__ == "__main__":
    main()
