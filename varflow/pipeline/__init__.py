"""High level code for driving a per-sample variant analysis pipeline.

This structures processing into the following modules:

  - run_info.py: Discover paired fastq inputs and derive sample keys.
  - graph.py: Declare stages, joins and aggregates and run them.
    - stages.py: The concrete stage graph and external tool invocations.
    - aggregate.py: Collect per-sample records into batch level files.
  - main.py: Drive a full run and report a summary.
"""
