from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from sklearn.datasets import fetch_california_housing, load_diabetes
from sklearn.metrics import mean_squared_error, r2_score, mean_absolute_error
from sklearn.model_selection import train_test_split
from sklearn.ensemble import GradientBoostingRegressor
from xgboost import XGBRegressor

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))
from exactgbdt import ExactGBDTRegressor  # type: ignore


def parse_args():
    p = argparse.ArgumentParser()
    p.add_argument("--test-size", type=float, default=0.3)
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--max-rows", type=int, default=5000, help="Cap rows per dataset for quicker runs (0 = no cap)")
    p.add_argument("--missing-rate", type=float, default=0.1, help="Fraction of feature values blanked out as NaN")
    p.add_argument("--num-iterations", type=int, default=100)
    p.add_argument("--plot-dir", type=str, default="artifacts/benchmark_plots", help="Directory to save plots")
    return p.parse_args()


# -------------------------------------------------------
# DATASETS
# -------------------------------------------------------

def _maybe_cap(df: pd.DataFrame, target: pd.Series, max_rows: int, seed: int):
    """Optionally downsample rows to speed up benchmarking."""
    if max_rows and len(df) > max_rows:
        sampled = df.sample(n=max_rows, random_state=seed)
        target = target.loc[sampled.index]
        return sampled, target
    return df, target


def _blank_out(df: pd.DataFrame, rate: float, seed: int) -> pd.DataFrame:
    """Turn a random fraction of entries into missing values."""
    if rate <= 0:
        return df
    rng = np.random.default_rng(seed)
    return df.mask(rng.random(df.shape) < rate)


def load_datasets(seed=42, max_rows=0, missing_rate=0.0):
    datasets = []

    cal = fetch_california_housing(as_frame=True)
    Xc, yc = _maybe_cap(cal.data, cal.target, max_rows, seed)
    datasets.append(("CaliforniaHousing", _blank_out(Xc, missing_rate, seed), yc))

    diab = load_diabetes(as_frame=True)
    Xd, yd = _maybe_cap(diab.data, diab.target, max_rows, seed)
    datasets.append(("Diabetes", _blank_out(Xd, missing_rate, seed), yd))

    return datasets


# -------------------------------------------------------
# MODELS
# -------------------------------------------------------

def make_models(seed=42, num_iterations=100):
    # Same depth, shrinkage and regularization for the two exact-greedy boosters
    return [
        ("GradientBoost", GradientBoostingRegressor(n_estimators=num_iterations, max_depth=4, random_state=seed)),
        (
            "XGBoost-exact",
            XGBRegressor(
                n_estimators=num_iterations,
                learning_rate=0.1,
                max_depth=4,
                reg_lambda=1.0,
                gamma=0.0,
                tree_method="exact",
            ),
        ),
        (
            "ExactGBDT",
            ExactGBDTRegressor(
                num_iterations=num_iterations,
                learning_rate=0.1,
                max_depth=4,
                lambda_l2=1.0,
                gamma=0.0,
            ),
        ),
    ]


# -------------------------------------------------------
# BENCHMARK RUNNER
# -------------------------------------------------------

def evaluate(name, model, X_train, X_test, y_train, y_test):
    model.fit(X_train, y_train)
    pred = model.predict(X_test)
    mse = mean_squared_error(y_test, pred)

    return {
        "Model": name,
        "R2": round(r2_score(y_test, pred), 4),
        "RMSE": round(float(np.sqrt(mse)), 4),
        "MAE": round(mean_absolute_error(y_test, pred), 4),
    }


def plot_training_curve(model: ExactGBDTRegressor, dname: str, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    history = model.training_history_

    plt.figure(figsize=(7, 4))
    plt.plot(history["train_loss"], label="train")
    if history["val_loss"]:
        plt.plot(history["val_loss"], label="validation")
    plt.xlabel("Iteration")
    plt.ylabel("0.5 * MSE")
    plt.title(f"ExactGBDT loss - {dname}")
    plt.legend()
    plt.tight_layout()
    plt.savefig(out_dir / f"loss_{dname.lower()}.png", dpi=150)
    plt.close()


def main():

    args = parse_args()
    datasets = load_datasets(args.seed, max_rows=args.max_rows, missing_rate=args.missing_rate)
    leaderboard = []

    for dname, X, y in datasets:

        print(f"\n ===== DATASET: {dname} ===== ")

        X_train, X_test, y_train, y_test = train_test_split(
            X, y, test_size=args.test_size, random_state=args.seed
        )

        for name, model in make_models(args.seed, args.num_iterations):
            if name == "GradientBoost":
                # no native missing-value support
                fill = X_train.median()
                res = evaluate(name, model, X_train.fillna(fill), X_test.fillna(fill), y_train, y_test)
            else:
                res = evaluate(name, model, X_train, X_test, y_train, y_test)

            res["Dataset"] = dname
            leaderboard.append(res)
            print(f"{name:<15}  R2={res['R2']} RMSE={res['RMSE']} MAE={res['MAE']}")

        # Refit with a validation set to record the loss curve
        curve_model = ExactGBDTRegressor(
            num_iterations=args.num_iterations, learning_rate=0.1, max_depth=4
        )
        curve_model.fit(X_train, y_train, eval_set=(X_test, y_test))
        plot_training_curve(curve_model, dname, Path(args.plot_dir))

    df = pd.DataFrame(leaderboard)
    print("\n================== LEADERBOARD ==================")
    print(df.sort_values(["Dataset", "R2"], ascending=[True, False]))
    print(f"\nSaved plots to {Path(args.plot_dir).resolve()}")


if __name__ == "__main__":
    main()
