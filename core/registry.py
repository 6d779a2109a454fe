from typing import Dict, List, Callable, Any

from tasks.control_plane import bootstrap_control_plane
from tasks.facts import gather_node_facts
from tasks.join import join_cluster
from tasks.node_reset import reset_node
from tasks.preflight import check_preconditions
from tasks.verify import verify_installation

TaskChain = List[Callable[..., Any]]

GROUP_EXECUTION_ORDER = ["k8s_control_plane", "k8s_worker"]

TASK_REGISTRY: Dict[str, Dict[str, TaskChain]] = {

    # --- GOAL: INIT (Control Plane Bootstrap) ---
    "INIT": {
        "k8s_control_plane": [
            gather_node_facts,
            bootstrap_control_plane,  # checks preconditions after the operator decision
        ],
        "k8s_worker": []
    },

    # --- GOAL: JOIN (Workers) ---
    "JOIN": {
        "k8s_control_plane": [],
        "k8s_worker": [
            gather_node_facts,
            check_preconditions,
            join_cluster,
        ]
    },

    # --- GOAL: RESET ---
    "RESET": {
        "k8s_control_plane": [gather_node_facts, reset_node],
        "k8s_worker": [gather_node_facts, reset_node]
    },

    # --- GOAL: VERIFY ---
    "VERIFY": {
        "k8s_control_plane": [gather_node_facts, verify_installation],
        "k8s_worker": [gather_node_facts, verify_installation]
    }
}
