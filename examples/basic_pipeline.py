"""
Basic roughness estimation example.

Trains a boosted model for Manning's n on a synthetic reach population and
validates it against synthetic rating curves.
"""

import numpy as np
import pandas as pd

from roughlib import HyperparameterGrid, PipelineConfig, ResamplingConfig, run_pipeline

# Generate a synthetic reach population in three regions
rng = np.random.default_rng(42)
regions = {"01": 120, "10": 80, "17": 40}

rows = []
comid = 100000
for region, count in regions.items():
    for i in range(count):
        comid += 1
        rows.append(
            {
                "comid": comid,
                "areasqkm": rng.uniform(1.0, 80.0),
                "lengthkm": rng.uniform(0.2, 6.0),
                "slope": rng.uniform(1e-4, 0.04),
                "pathlength": rng.uniform(5.0, 2500.0),
                "arbolatesu": rng.uniform(1.0, 900.0),
                "reachcode": f"{region}{i:012d}",
            }
        )
attributes = pd.DataFrame(rows)

# "Optimized" roughness: a smooth function of slope and area plus noise
n_true = 0.035 * attributes["slope"] ** 0.08 * attributes["areasqkm"] ** -0.03
targets = pd.DataFrame(
    {"comid": attributes["comid"], "n": n_true * rng.lognormal(0.0, 0.05, len(attributes))}
)

# Observed rating curves generated with the optimized roughness
stages = np.arange(0.5, 8.0, 0.5)
curves = []
for rec, n in zip(attributes.to_dict(orient="records"), targets["n"]):
    length_m = rec["lengthkm"] * 1000.0
    reference = 40.0 * length_m * stages**1.6
    flow = np.sqrt(rec["slope"]) / (length_m * n) * reference
    curves.append(
        pd.DataFrame(
            {"comid": rec["comid"], "stage": stages, "flow": flow, "flat_tub_flow": reference}
        )
    )
rating_curves = pd.concat(curves, ignore_index=True)

print("=" * 60)
print("ROUGHLIB ROUGHNESS ESTIMATION EXAMPLE")
print("=" * 60)

config = PipelineConfig(
    model_name="example_gbm",
    seed=42,
    persist=False,
    region_cap=50,
    resampling=ResamplingConfig(method="repeatedcv", n_folds=5, n_repeats=2),
    grid=HyperparameterGrid(
        interaction_depth=(1, 3),
        n_trees=(100, 300),
        shrinkage=(0.05,),
        n_minobsinnode=(5,),
        bag_fraction=0.5,
    ),
)

result = run_pipeline(targets, attributes, rating_curves, config)

print("\n1. PARTITION")
print("-" * 40)
print(result.training.partition.summary())

print("\n2. SELECTED MODEL")
print("-" * 40)
print(result.model.summary())

print("\n3. VALIDATION")
print("-" * 40)
stats = result.validation.summary_stats()
print(f"Validation reaches: {stats['n_records']}")
print(f"Median nRMSE:       {stats['nrmse']['median']:.4f}")
print(f"Median predicted n: {stats['n']['median']:.4f}")
