"""Static definition of a pipeline as a graph of stages, joins and aggregates.

The graph is declared once: a source seeded with per-sample inputs, stages
reading from one upstream node, joins combining two or more upstream nodes by
sample key, and aggregates collecting a stage's per-sample records into batch
files. `run` wires fresh channels for every run and drives all stages
concurrently until each channel has closed.

Optional branches are plain stages registered or left out when building the
graph; nothing else in the wiring needs to change.
"""
import collections
import os

from varflow import utils
from varflow.distributed.channel import Channel, make_tuple, tee
from varflow.distributed.join import JoinRunner
from varflow.distributed.multi import StageRunner
from varflow.log import logger
from varflow.pipeline import config_utils
from varflow.pipeline.aggregate import AggregateSink

FAILURE_POLICIES = ("isolate",)

SourceSpec = collections.namedtuple("SourceSpec", ["name", "outputs"])
StageSpec = collections.namedtuple("StageSpec", ["name", "upstream", "inputs", "outputs",
                                                 "max_concurrency", "failure_policy"],
                                   defaults=(1, "isolate"))
JoinSpec = collections.namedtuple("JoinSpec", ["name", "upstreams"])
AggregateSpec = collections.namedtuple("AggregateSpec", ["name", "stage", "artifact", "out_file",
                                                         "has_header"],
                                       defaults=(False,))
PipelineResult = collections.namedtuple("PipelineResult", ["failures", "aggregates", "completed",
                                                           "dropped"])

class GraphBuildError(ValueError):
    pass

class PipelineGraph(object):
    def __init__(self, name="pipeline"):
        self.name = name
        self.nodes = collections.OrderedDict()
        self.tasks = {}
        self.aggregates = collections.OrderedDict()

    def _add_node(self, spec):
        if spec.name in self.nodes:
            raise GraphBuildError("Duplicate node name in pipeline: %s" % spec.name)
        self.nodes[spec.name] = spec
        return spec

    def add_source(self, name, outputs):
        return self._add_node(SourceSpec(name, tuple(outputs)))

    def add_stage(self, spec, task):
        spec = spec._replace(inputs=tuple(spec.inputs), outputs=tuple(spec.outputs))
        self._add_node(spec)
        self.tasks[spec.name] = task
        return spec

    def add_join(self, spec):
        return self._add_node(spec._replace(upstreams=tuple(spec.upstreams)))

    def add_aggregate(self, spec):
        if spec.name in self.aggregates:
            raise GraphBuildError("Duplicate aggregate name in pipeline: %s" % spec.name)
        self.aggregates[spec.name] = spec
        return spec

    def sources(self):
        return [n for n, s in self.nodes.items() if isinstance(s, SourceSpec)]

    def stages(self):
        return [n for n, s in self.nodes.items() if isinstance(s, StageSpec)]

    def joins(self):
        return [n for n, s in self.nodes.items() if isinstance(s, JoinSpec)]

    def upstreams(self, name):
        spec = self.nodes[name]
        if isinstance(spec, StageSpec):
            return [spec.upstream]
        elif isinstance(spec, JoinSpec):
            return list(spec.upstreams)
        return []

    def provides(self, name):
        """Artifact names carried by tuples on a node's output channel.
        """
        spec = self.nodes[name]
        if isinstance(spec, JoinSpec):
            out = set([])
            for upstream in spec.upstreams:
                out |= self.provides(upstream)
            return out
        return set(spec.outputs)

    def topological_order(self):
        """Deterministic ordering of node names, upstreams first.

        Ties are broken by name. Raises GraphBuildError on cycles or unknown
        upstream references.
        """
        incoming = {}
        outgoing = {n: set([]) for n in self.nodes}
        for name in self.nodes:
            ups = self.upstreams(name)
            for up in ups:
                if up not in self.nodes:
                    raise GraphBuildError("Node %s reads from unknown node %s" % (name, up))
                outgoing[up].add(name)
            incoming[name] = len(ups)
        ready = sorted(n for n, c in incoming.items() if c == 0)
        order = []
        while ready:
            name = ready.pop(0)
            order.append(name)
            for child in sorted(outgoing[name]):
                incoming[child] -= 1
                if incoming[child] == 0:
                    ready.append(child)
                    ready.sort()
        if len(order) != len(self.nodes):
            cycle = sorted(n for n in self.nodes if n not in order)
            raise GraphBuildError("Cycle detected in pipeline involving: %s" % ", ".join(cycle))
        return order

    def validate(self):
        """Check the graph is runnable, raising GraphBuildError on the first problem.
        """
        if len(self.sources()) != 1:
            raise GraphBuildError("Pipeline needs exactly one source, found %s" % len(self.sources()))
        for name, spec in self.nodes.items():
            if isinstance(spec, JoinSpec) and (len(spec.upstreams) < 2 or
                                              len(set(spec.upstreams)) != len(spec.upstreams)):
                raise GraphBuildError("Join %s needs at least two distinct upstreams" % name)
            if isinstance(spec, StageSpec):
                if spec.failure_policy not in FAILURE_POLICIES:
                    raise GraphBuildError("Stage %s has unsupported failure policy %s" %
                                          (name, spec.failure_policy))
                if int(spec.max_concurrency) < 1:
                    raise GraphBuildError("Stage %s needs max_concurrency of at least 1" % name)
        order = self.topological_order()
        for name in order:
            spec = self.nodes[name]
            if isinstance(spec, StageSpec):
                missing = set(spec.inputs) - self.provides(spec.upstream)
                if missing:
                    raise GraphBuildError("Stage %s requires %s, not provided by %s" %
                                          (name, ", ".join(sorted(missing)), spec.upstream))
        for name, spec in self.aggregates.items():
            if not isinstance(self.nodes.get(spec.stage), StageSpec):
                raise GraphBuildError("Aggregate %s collects from unknown stage %s" % (name, spec.stage))
            if spec.artifact not in self.nodes[spec.stage].outputs:
                raise GraphBuildError("Aggregate %s: stage %s does not produce %s" %
                                      (name, spec.stage, spec.artifact))
        return order

    def run(self, samples, work_dir, config=None, out_dir=None, abort=None):
        """Run samples, a list of (key, artifacts) pairs, through the pipeline.

        Returns once every channel has closed. Per-sample failures are
        reported in the result; a failure to write an aggregate is raised.
        """
        self.validate()
        run = PipelineRun(self, work_dir, config, out_dir, abort)
        return run.execute(samples)

class PipelineRun(object):
    """Channels, runners, joins and sinks for a single execution of a graph.
    """
    def __init__(self, graph, work_dir, config=None, out_dir=None, abort=None):
        self.graph = graph
        self.work_dir = utils.safe_makedir(os.path.abspath(work_dir))
        self.out_dir = os.path.abspath(out_dir or os.path.join(self.work_dir, "final"))
        self.config = config or {}
        self.abort = abort
        self.channels = {name: Channel(name) for name in graph.nodes}
        self.runners = collections.OrderedDict()
        self.joins = collections.OrderedDict()
        self.sinks = collections.OrderedDict()
        self._wire()

    def _wire(self):
        # every consumer subscribes before anything is sent
        consumers = collections.defaultdict(list)
        for name in self.graph.topological_order():
            for upstream in self.graph.upstreams(name):
                consumers[upstream].append(name)
        for name, spec in self.graph.aggregates.items():
            consumers[spec.stage].append(("aggregate", name))
        inboxes = {}
        for upstream, names in consumers.items():
            for consumer, sub in zip(names, tee(self.channels[upstream], len(names))):
                inboxes[(consumer, upstream)] = sub
        for name in self.graph.topological_order():
            spec = self.graph.nodes[name]
            if isinstance(spec, StageSpec):
                self.runners[name] = StageRunner(
                    spec, self.graph.tasks[name], inboxes[(name, spec.upstream)],
                    self.channels[name], self.work_dir, self.config, self.abort,
                    max_concurrency=config_utils.get_max_concurrency(name, self.config,
                                                                     spec.max_concurrency))
            elif isinstance(spec, JoinSpec):
                self.joins[name] = JoinRunner(spec, [inboxes[(name, x)] for x in spec.upstreams],
                                              self.channels[name])
        for name, spec in self.graph.aggregates.items():
            out_file = spec.out_file if os.path.isabs(spec.out_file) else os.path.join(self.out_dir, spec.out_file)
            sink = AggregateSink(name, out_file, spec.has_header, self.config)
            self.sinks[name] = (sink, inboxes[(("aggregate", name), spec.stage)], spec.artifact)

    def execute(self, samples):
        source = self.channels[self.graph.sources()[0]]
        seen = set([])
        inputs = []
        for key, artifacts in samples:
            if not utils.is_safe_dirname(key):
                raise GraphBuildError("Invalid sample key %r: keys name per-sample directories" % (key,))
            if key in seen:
                raise GraphBuildError("Duplicate sample key: %s" % key)
            seen.add(key)
            inputs.append(make_tuple(key, artifacts))
        logger.info("Running %s samples through %s stages" % (len(inputs), len(self.runners)))
        for sink, inbox, artifact in self.sinks.values():
            sink.start(inbox, artifact)
        for join in self.joins.values():
            join.start()
        for runner in self.runners.values():
            runner.start()
        for item in inputs:
            source.send(item)
        source.close()
        for runner in self.runners.values():
            runner.join()
        for join in self.joins.values():
            join.join()
        for sink, _, _ in self.sinks.values():
            sink.join()
        errors = [sink.error for sink, _, _ in self.sinks.values() if sink.error is not None]
        if errors:
            raise errors[0]
        return self.result()

    def result(self):
        failures = []
        for runner in self.runners.values():
            failures.extend(runner.failures)
        failures.sort(key=lambda x: (x.key, x.stage))
        aggregates = {}
        for name, (sink, _, _) in self.sinks.items():
            aggregates[name] = sink.written
        return PipelineResult(failures, aggregates,
                              {n: sorted(r.completed) for n, r in self.runners.items()},
                              {n: sorted(j.dropped) for n, j in self.joins.items()})
