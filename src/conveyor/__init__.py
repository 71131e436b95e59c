"""conveyor - a fail-fast CI job engine.

Runs each job from a declarative descriptor step by step inside
throwaway container sessions and reports one terminal result.

.. code-block:: text

    DescriptorSource → RunCoordinator → JobRunner → ContainerSession → StepExecutor
                                                         │
                                                   ContainerRuntime
                                              (local process | docker)
"""

__version__ = "0.1.0"
