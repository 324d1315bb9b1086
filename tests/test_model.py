"""Tests for the Sequential model."""
import logging

import numpy as np
import pytest

from mini_nn import BuildError, ModelStateError, RankError, ShapeError, Tensor
from mini_nn import functional as F
from mini_nn.nn import (
    CrossEntropy,
    Dense,
    Dropout,
    Flatten,
    Input,
    Lambda,
    Layer,
    ReLU,
    Sequential,
    Sigmoid,
    Softmax,
)
from mini_nn.optim import MomentumFactory, SGDFactory


class Recorder(Layer):
    """Identity layer that records the order of calls."""

    def __init__(self, tag, log):
        super().__init__()
        self.tag = tag
        self.log = log

    def call(self, batch):
        return list(batch)

    def forward(self, batch):
        self.log.append(('forward', self.tag))
        return list(batch)

    def backward(self, douts):
        self.log.append(('backward', self.tag))
        return list(douts)

    def update(self):
        self.log.append(('update', self.tag))


def classifier(seed=0):
    model = Sequential((2,), seed=seed)
    model.add_layer(Dense(2))
    model.add_layer(Softmax())
    return model


class TestBuild:
    """Tests for Sequential.build."""

    def test_starts_with_input_layer(self):
        model = Sequential((3,))
        assert len(model.layers) == 1
        assert isinstance(model.layers[0], Input)
        assert not model.built

    def test_propagates_shapes(self):
        model = Sequential((4, 4))
        model.add_layer(Flatten()).add_layer(Dense(8)).add_layer(ReLU()).add_layer(Dense(3))
        model.build(CrossEntropy(), SGDFactory())
        assert model.built
        assert [layer.output_shape.dims for layer in model.layers] == [(4, 4), (16,), (8,), (8,), (3,)]
        assert model.output_shape == (3,)

    def test_failure_reports_layer(self):
        model = Sequential((2, 2))
        model.add_layer(Dense(3))
        with pytest.raises(BuildError) as info:
            model.build(CrossEntropy(), SGDFactory())
        assert info.value.index == 1
        assert isinstance(info.value.layer, Dense)
        assert isinstance(info.value.__cause__, RankError)
        assert "Dense" in str(info.value)

    def test_failure_leaves_model_unbuilt(self):
        model = Sequential((2, 2))
        model.add_layer(Softmax())
        with pytest.raises(BuildError):
            model.build(CrossEntropy(), SGDFactory())
        assert not model.built
        with pytest.raises(ModelStateError):
            model.predict([Tensor.zeros((2, 2))])

    def test_failed_rebuild_keeps_trained_state(self, separable_dataset):
        x, t = separable_dataset
        model = classifier()
        model.build(CrossEntropy(), MomentumFactory(learning_rate=0.1, momentum=0.9))
        model.fit(x, t, epochs=3, batch_size=10)
        dense = model.layers[1]
        optimizer = dense.optimizer_weight
        weight, bias = dense.weight.clone(), dense.bias.clone()
        velocity = optimizer.velocity.clone()
        rng_state = model.rng.bit_generator.state

        model.add_layer(Lambda(lambda s: s.reshape((3,))))
        with pytest.raises(BuildError) as info:
            model.build(CrossEntropy(), SGDFactory())

        assert info.value.index == 3
        assert not model.built
        assert dense.optimizer_weight is optimizer
        assert dense.weight.allclose(weight)
        assert dense.bias.allclose(bias)
        assert dense.optimizer_weight.velocity.allclose(velocity)
        assert model.rng.bit_generator.state == rng_state

    def test_adding_layer_requires_rebuild(self):
        model = classifier()
        model.build(CrossEntropy(), SGDFactory())
        model.add_layer(ReLU())
        assert not model.built

    def test_rejects_non_layers(self):
        with pytest.raises(TypeError):
            Sequential((2,)).add_layer(object())

    def test_same_seed_same_weights(self):
        a, b = classifier(seed=3), classifier(seed=3)
        a.build(CrossEntropy(), SGDFactory())
        b.build(CrossEntropy(), SGDFactory())
        assert a.layers[1].weight.allclose(b.layers[1].weight)

    def test_layer_rng_is_kept(self, rng):
        model = Sequential((2,), seed=1)
        layer = Dense(2, rng=rng)
        model.add_layer(layer)
        model.build(CrossEntropy(), SGDFactory())
        assert layer.rng is rng

    def test_summary(self):
        model = classifier()
        model.build(CrossEntropy(), SGDFactory())
        summary = model.summary()
        assert "Dense" in summary
        assert "Softmax" in summary
        assert "Total params: 6" in summary
        assert model.count_params() == 6


class TestPredict:
    """Tests for predict, loss and accuracy."""

    def test_use_before_build(self):
        model = classifier()
        with pytest.raises(ModelStateError):
            model.predict([Tensor.zeros((2,))])
        with pytest.raises(ModelStateError):
            model.fit([Tensor.zeros((2,))], [F.one_hot(0, 2)])

    def test_predict_outputs_probabilities(self, separable_dataset):
        x, _ = separable_dataset
        model = classifier()
        model.build(CrossEntropy(), SGDFactory())
        y = model.predict(x[:5])
        assert len(y) == 5
        for yi in y:
            assert yi.shape == (2,)
            assert yi.sum() == pytest.approx(1.0)

    def test_predict_has_no_side_effects(self, separable_dataset):
        x, _ = separable_dataset
        model = Sequential((2,), seed=0)
        model.add_layer(Dense(4)).add_layer(Dropout(0.5)).add_layer(Dense(2)).add_layer(Softmax())
        model.build(CrossEntropy(), SGDFactory())
        first = model.predict(x[:3])
        second = model.predict(x[:3])
        for a, b in zip(first, second):
            assert a.allclose(b)

    def test_accuracy(self):
        model = classifier()
        y = [Tensor.from_values((2,), [0.9, 0.1]), Tensor.from_values((2,), [0.2, 0.8])]
        t = [F.one_hot(0, 2), F.one_hot(0, 2)]
        assert model.accuracy(y, t) == 0.5

    def test_accuracy_length_mismatch(self):
        with pytest.raises(ShapeError):
            classifier().accuracy([F.one_hot(0, 2)], [])


class TestFit:
    """Tests for Sequential.fit and train_batch."""

    def test_backward_and_update_run_in_reverse(self):
        log = []
        model = Sequential((2,))
        model.add_layer(Recorder('a', log)).add_layer(Recorder('b', log)).add_layer(Softmax())
        model.build(CrossEntropy(), SGDFactory())
        model.train_batch([Tensor.zeros((2,))], [F.one_hot(0, 2)])
        assert log == [
            ('forward', 'a'), ('forward', 'b'),
            ('backward', 'b'), ('update', 'b'),
            ('backward', 'a'), ('update', 'a'),
        ]

    def test_drops_trailing_partial_batch(self, separable_dataset, monkeypatch):
        x, t = separable_dataset
        model = classifier()
        model.build(CrossEntropy(), SGDFactory())
        sizes = []
        original = model.train_batch

        def counting(xb, tb):
            sizes.append(len(xb))
            return original(xb, tb)

        monkeypatch.setattr(model, 'train_batch', counting)
        model.fit(x[:25], t[:25], epochs=2, batch_size=10)
        assert sizes == [10, 10, 10, 10]

    def test_trains_on_separable_data(self, separable_dataset):
        x, t = separable_dataset
        model = classifier(seed=0)
        model.build(CrossEntropy(), SGDFactory(learning_rate=0.3))
        history = model.fit(x, t, epochs=10, batch_size=10)

        assert history.epochs == 10
        assert all(b < a for a, b in zip(history.loss, history.loss[1:]))
        assert history.accuracy[-1] > 0.9
        loss, acc = model.evaluate(x, t)
        assert loss == pytest.approx(history.loss[-1])
        assert acc > 0.9

    def test_updates_all_dense_layers(self, separable_dataset):
        x, t = separable_dataset
        model = Sequential((2,), seed=0)
        model.add_layer(Dense(4)).add_layer(Sigmoid()).add_layer(Dense(2)).add_layer(Softmax())
        model.build(CrossEntropy(), MomentumFactory(learning_rate=0.1, momentum=0.9))
        dense = [layer for layer in model.layers if isinstance(layer, Dense)]
        before = [layer.weight.clone() for layer in dense]
        model.fit(x, t, epochs=1, batch_size=20)
        assert all(not layer.weight.allclose(w) for layer, w in zip(dense, before))

    def test_validation_data(self, separable_dataset):
        x, t = separable_dataset
        model = classifier()
        model.build(CrossEntropy(), SGDFactory(learning_rate=0.3))
        history = model.fit(x[:80], t[:80], epochs=2, batch_size=10, validation_data=(x[80:], t[80:]))
        assert len(history.val_loss) == 2
        assert len(history.val_accuracy) == 2

    def test_zero_epochs(self, separable_dataset):
        x, t = separable_dataset
        model = classifier()
        model.build(CrossEntropy(), SGDFactory())
        assert model.fit(x, t, epochs=0, batch_size=10).epochs == 0

    def test_invalid_arguments(self, separable_dataset):
        x, t = separable_dataset
        model = classifier()
        model.build(CrossEntropy(), SGDFactory())
        with pytest.raises(ShapeError):
            model.fit(x, t[:-1])
        with pytest.raises(ValueError):
            model.fit(x, t, batch_size=0)
        with pytest.raises(ValueError):
            model.fit(x, t, epochs=-1)
        with pytest.raises(ValueError):
            model.fit([], [])

    def test_logs_progress(self, separable_dataset, caplog):
        x, t = separable_dataset
        model = classifier()
        model.build(CrossEntropy(), SGDFactory())
        with caplog.at_level(logging.INFO, logger="mini_nn.nn"):
            model.fit(x, t, epochs=1, batch_size=50)
        assert any("epoch 1/1" in record.getMessage() for record in caplog.records)

    def test_warns_when_dataset_smaller_than_batch(self, separable_dataset, caplog):
        x, t = separable_dataset
        model = classifier()
        model.build(CrossEntropy(), SGDFactory())
        before = model.layers[1].weight.clone()
        with caplog.at_level(logging.WARNING, logger="mini_nn.nn"):
            model.fit(x[:5], t[:5], epochs=1, batch_size=10)
        assert any(record.levelno == logging.WARNING for record in caplog.records)
        assert model.layers[1].weight.allclose(before)

    def test_image_pipeline_trains(self):
        gen = np.random.default_rng(7)
        x = [Tensor.from_numpy(gen.uniform(size=(3, 3))) for _ in range(8)]
        t = [F.one_hot(i % 3, 3) for i in range(8)]
        model = Sequential((3, 3), seed=0)
        model.add_layer(Flatten()).add_layer(Dense(5)).add_layer(ReLU()).add_layer(Dropout(0.8))
        model.add_layer(Dense(3)).add_layer(Softmax())
        model.build(CrossEntropy(), SGDFactory(learning_rate=0.1))
        history = model.fit(x, t, epochs=2, batch_size=4)
        assert all(np.isfinite(history.loss))
