"""Constants that we use in multiple modules."""

import os


# Random seed, set to a value if you want to replicate the results,
# this seed is used to initialise the mixture fits
random_seed = 777


# Expression states, ordered from under- to over-expressed. Every
# fitted gene distribution exposes exactly these states.
STATES = ("down", "neutral", "up")
N_STATES = len(STATES)


# Genes with an expressedness weight below this value are removed
# from the influence graph before trans analysis
DEFAULT_WEIGHT_THRESHOLD = 0.8


# EM defaults
DEFAULT_ITER_MAX = 50
DEFAULT_THRESHOLD = 1e-6
DEFAULT_PSEUDOCOUNT = 0.01
DEFAULT_FUNCTIONAL_PRIOR = 0.5


# Mixture fitting defaults
DEFAULT_N_COMPONENTS = 3
MIN_BACKGROUND_SAMPLES = 10
MIN_BACKGROUND_STD = 1e-6
MIN_COMPONENT_WEIGHT = 0.01
OUTLIER_SHIFT = 3.0
OUTLIER_SCALE = 3.0
OUTLIER_WEIGHT = 0.01


# Default number of worker processes for per-gene fits
default_n_jobs = int(os.environ.get("XSEQ_N_JOBS", "1"))


# Mutation classes. Missense, in-frame and complex events can act
# either way, so they belong to both groups.
loss_mutation_types = frozenset([
    "HOMD", "NONSENSE", "FRAMESHIFT", "SPLICE", "NONSTOP",
    "STARTGAINED", "MISSENSE", "INFRAME", "COMPLEX"])

gain_mutation_types = frozenset([
    "HLAMP", "MISSENSE", "INFRAME", "FUSION", "COMPLEX"])

mutation_type_groups = {
    "loss": loss_mutation_types,
    "gain": gain_mutation_types,
    "both": loss_mutation_types | gain_mutation_types,
}

all_mutation_types = frozenset(
    mutation_type_groups["both"] | {"SYNONYMOUS", "OTHER"})


# Expression states considered dysregulated for each mutation type
# filter
dysregulated_states = {
    "loss": ("down",),
    "gain": ("up",),
    "both": ("down", "up"),
}


# Columns of the long-form mutation table
mutation_columns = ["patient_id", "gene_id", "mutation_type"]
cna_column = "cna_call"
